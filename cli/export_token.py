"""Export token: base64 of zlib-compressed JSON holding user settings and configs."""

from __future__ import annotations
from tracking import t

import base64
import binascii
import json
import uuid
import zlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence

from automation.shared.errors import ExportTokenError
from automation.shared.reservation_contracts import ReservationConfig, UserProfile
from infrastructure.constants import APP_VERSION


@dataclass(frozen=True)
class ExportBundle:
    """Decoded contents of an export token."""

    profile: UserProfile
    configs: List[ReservationConfig] = field(default_factory=list)
    export_date: Optional[str] = None
    version: str = APP_VERSION
    export_id: str = ""

    def to_dict(self) -> Dict[str, Any]:
        settings = self.profile.to_dict()
        settings.update(
            {
                "preventSleepForAutorun": False,
                "autoCloseDebugWindowOnFailure": False,
                "showBrowserWindow": False,
            }
        )
        return {
            "userSettings": settings,
            "selectedConfigurations": [config.to_dict() for config in self.configs],
            "exportDate": self.export_date or datetime.now(timezone.utc).isoformat(),
            "version": self.version,
            "exportId": self.export_id or str(uuid.uuid4()),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ExportBundle":
        settings = payload.get("userSettings")
        if not isinstance(settings, Mapping):
            raise ExportTokenError("Export token is missing userSettings")
        raw_configs = payload.get("selectedConfigurations") or []
        if not isinstance(raw_configs, list):
            raise ExportTokenError("selectedConfigurations must be a list")

        configs: List[ReservationConfig] = []
        for index, raw in enumerate(raw_configs, start=1):
            if not isinstance(raw, Mapping):
                raise ExportTokenError(f"Configuration {index} is not an object")
            try:
                configs.append(ReservationConfig.from_dict(raw))
            except (TypeError, ValueError) as exc:
                raise ExportTokenError(f"Configuration {index} is invalid: {exc}") from exc

        export_date = payload.get("exportDate")
        return cls(
            profile=UserProfile.from_dict(settings),
            configs=configs,
            export_date=str(export_date) if export_date is not None else None,
            version=str(payload.get("version") or APP_VERSION),
            export_id=str(payload.get("exportId") or ""),
        )


def decode_export_token(token: str) -> ExportBundle:
    """Decode a token; raise :class:`ExportTokenError` when it is malformed."""
    t('cli.export_token.decode_export_token')
    token = (token or "").strip()
    if not token:
        raise ExportTokenError("Export token is empty")
    try:
        compressed = base64.b64decode(token, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ExportTokenError("Export token is not valid base64") from exc
    try:
        raw = zlib.decompress(compressed)
    except zlib.error as exc:
        raise ExportTokenError("Export token could not be decompressed") from exc
    try:
        payload = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise ExportTokenError("Export token does not contain valid JSON") from exc
    if not isinstance(payload, Mapping):
        raise ExportTokenError("Export token JSON must be an object")
    return ExportBundle.from_dict(payload)


def encode_export_token(
    profile: UserProfile,
    configs: Sequence[ReservationConfig],
    *,
    export_id: Optional[str] = None,
    export_date: Optional[str] = None,
) -> str:
    t('cli.export_token.encode_export_token')
    bundle = ExportBundle(
        profile=profile,
        configs=list(configs),
        export_date=export_date,
        export_id=export_id or "",
    )
    raw = json.dumps(bundle.to_dict(), separators=(",", ":")).encode("utf-8")
    return base64.b64encode(zlib.compress(raw)).decode("ascii")


__all__ = ["ExportBundle", "decode_export_token", "encode_export_token"]
