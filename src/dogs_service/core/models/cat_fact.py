from typing import List

from pydantic import BaseModel, Field


class CatFact(BaseModel):
    fact_number: int
    fact: str


class CatFactsResponse(BaseModel):
    facts: List[CatFact] = Field(default_factory=list)
