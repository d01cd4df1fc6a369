from schemas.schemas import SubmitEventRequest, WSIncoming
