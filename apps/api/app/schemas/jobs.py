from pydantic import BaseModel


class ExpireOrdersResponse(BaseModel):
    ok: bool
    updated: int
