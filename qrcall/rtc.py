import logging
import time
from dataclasses import dataclass
from typing import Optional, Union

from agora_token_builder import RtcTokenBuilder

from .errors import RtcTokenError
from .utils import clamp_expire, parse_role

logger = logging.getLogger("qrcall")


@dataclass
class RtcCredential:
    token: str
    uid: Union[str, int]
    channel: str
    app_id: str
    expire_at: int
    expire_in: int


class AgoraTokenIssuer:
    """Issues time-boxed Agora RTC tokens for a channel participant."""

    def __init__(self, app_id: Optional[str], app_cert: Optional[str], default_ttl: int):
        self.app_id = app_id
        self.app_cert = app_cert
        self.default_ttl = default_ttl

    def is_configured(self) -> bool:
        return bool(self.app_id and self.app_cert)

    def issue(self, channel: str, uid: Union[str, int], role="publisher", ttl: Optional[int] = None) -> RtcCredential:
        if not self.is_configured():
            raise RtcTokenError("Agora credentials not configured")

        role_value = parse_role(role)
        if role_value is None:
            raise RtcTokenError(f"Invalid RTC role: {role}")

        expire = clamp_expire(ttl if ttl is not None else self.default_ttl)
        expire_ts = int(time.time()) + expire

        try:
            if isinstance(uid, int):
                token_value = RtcTokenBuilder.buildTokenWithUid(
                    self.app_id, self.app_cert, channel, uid, role_value, expire_ts
                )
            else:
                token_value = RtcTokenBuilder.buildTokenWithAccount(
                    self.app_id, self.app_cert, channel, str(uid), role_value, expire_ts
                )
        except Exception as e:
            logger.error(f"[TOKEN] Failed to build token for channel={channel}: {e}")
            raise RtcTokenError("Failed to generate voice call token")

        return RtcCredential(
            token=token_value,
            uid=uid,
            channel=channel,
            app_id=self.app_id,
            expire_at=expire_ts,
            expire_in=expire,
        )
