from __future__ import annotations

from flask import has_request_context, session

SUPPORTED_LANGS = {"ja", "en"}
DEFAULT_LANG = "ja"

I18N: dict[str, dict[str, str]] = {
    "track.7year": {"ja": "7年後合祀（2015年1月以前契約）", "en": "7-year consolidation (contract before 2015-01)"},
    "track.13year": {"ja": "13年後合祀（2021年4月以降契約）", "en": "13-year consolidation (contract from 2021-04)"},
    "track.33year": {"ja": "33年後合祀", "en": "33-year consolidation"},
    "billing.pending": {"ja": "未請求", "en": "Pending"},
    "billing.billed": {"ja": "請求済み", "en": "Billed"},
    "billing.paid": {"ja": "支払済み", "en": "Paid"},
    "application.pending": {"ja": "受付", "en": "Pending"},
    "application.scheduled": {"ja": "合祀予定", "en": "Scheduled"},
    "application.completed": {"ja": "合祀完了", "en": "Completed"},
    "application.cancelled": {"ja": "キャンセル", "en": "Cancelled"},
    "capacity.safe": {"ja": "余裕あり", "en": "Safe"},
    "capacity.warning": {"ja": "残りわずか", "en": "Warning"},
    "capacity.critical": {"ja": "危険域", "en": "Critical"},
    "capacity.full": {"ja": "満員", "en": "Full"},
}


def get_locale() -> str:
    if not has_request_context():
        return DEFAULT_LANG
    lang = session.get("lang", DEFAULT_LANG)
    if lang not in SUPPORTED_LANGS:
        return DEFAULT_LANG
    return lang


def translate(key: str) -> str:
    lang = get_locale()
    return I18N.get(key, {}).get(lang, key)
