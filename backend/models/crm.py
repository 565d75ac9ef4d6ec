from pydantic import BaseModel


class CardStageUpdate(BaseModel):
    stage_id: str
