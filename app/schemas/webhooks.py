from pydantic import BaseModel


class WebhookAck(BaseModel):
    received: bool = True


class WebhookError(BaseModel):
    detail: str
