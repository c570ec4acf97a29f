from pydantic import BaseModel, ConfigDict, Field


class Dog(BaseModel):
    id: int
    name: str
    description: str = ""

    model_config = ConfigDict(frozen=True)


class DogClassic(BaseModel):
    """Version 1.0 representation of a dog: id plus `dogName` only."""

    id: int
    dog_name: str = Field(serialization_alias="dogName")

    @classmethod
    def from_dog(cls, dog: Dog) -> "DogClassic":
        return cls(id=dog.id, dog_name=dog.name)
