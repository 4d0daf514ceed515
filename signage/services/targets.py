from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from signage.models.screen import Screen, ScreenGroup

TARGET_MODELS = {"screen": Screen, "group": ScreenGroup}


def find_target(db: Session, target_type: str, target_id: str):
    model = TARGET_MODELS.get(target_type)
    if model is None:
        return None
    return db.get(model, target_id)


def is_valid_timezone(name: str) -> bool:
    try:
        ZoneInfo(name)
    except Exception:
        return False
    return True
