from pydantic import BaseModel, Field


class DiscoverRequest(BaseModel):
    interest: str = Field(min_length=1, max_length=200)


class DiscoverResult(BaseModel):
    id: str
    title: str
    url: str
    description: str


class DiscoverResponse(BaseModel):
    sources: list[DiscoverResult]
