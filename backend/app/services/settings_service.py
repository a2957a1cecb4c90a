# Overview: Service-layer operations for shop settings; encapsulates business logic and database work.

from __future__ import annotations

from ..extensions import db
from ..models import ShopSetting
from .order_errors import ValidationError

WALLET_SETTINGS_KEY = "wallet"

# Shown to customers who pick wallet transfer at checkout
WALLET_SETTINGS_DEFAULTS = {
    "name": "",
    "account_number": "",
    "qr_image_url": "",
    "instructions": "",
}


def get_wallet_settings() -> dict:
    row = db.session.query(ShopSetting).filter_by(setting_key=WALLET_SETTINGS_KEY).first()
    settings = dict(WALLET_SETTINGS_DEFAULTS)
    if row and isinstance(row.setting_value, dict):
        settings.update({k: v for k, v in row.setting_value.items() if k in WALLET_SETTINGS_DEFAULTS})
    return settings


def update_wallet_settings(values: dict, user_id: int | None = None) -> dict:
    """Merge known keys into the stored wallet settings. Unknown keys are rejected."""
    if not isinstance(values, dict):
        raise ValidationError("settings must be an object")
    unknown = sorted(set(values) - set(WALLET_SETTINGS_DEFAULTS))
    if unknown:
        raise ValidationError("Unknown wallet setting keys", details={"keys": unknown})

    settings = get_wallet_settings()
    for key, value in values.items():
        settings[key] = "" if value is None else str(value).strip()

    row = db.session.query(ShopSetting).filter_by(setting_key=WALLET_SETTINGS_KEY).first()
    if row is None:
        row = ShopSetting(setting_key=WALLET_SETTINGS_KEY, setting_value=settings)
        db.session.add(row)
    else:
        # Reassign (not mutate) so the JSON column is marked dirty
        row.setting_value = settings
    row.updated_by_user_id = user_id
    db.session.commit()
    return settings
