"""Tagged identities for rides and riders.

A record created on this device carries a `LocalId` until the Remote Storage
API accepts it, at which point it is re-tagged with the server's `RemoteId`.
"""
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class LocalId(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["local"] = "local"
    value: int

    @property
    def is_remote(self) -> bool:
        return False

    def __str__(self) -> str:
        return f"local:{self.value}"


class RemoteId(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["remote"] = "remote"
    value: int = Field(gt=0)

    @property
    def is_remote(self) -> bool:
        return True

    def __str__(self) -> str:
        return f"remote:{self.value}"


Identity = Annotated[Union[LocalId, RemoteId], Field(discriminator="kind")]
