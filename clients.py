"""
Proxy Client Variants - Upstream-facing identity profiles for the player endpoint
Different profiles return different URL/cipher characteristics and block rates.
"""
from typing import Dict, Optional, Any
from pydantic import BaseModel
from config import ProxyConfig


class ClientVariant(BaseModel):
    """One identity the player endpoint can be called with"""
    name: str
    client_name: str
    client_version: str
    client_id: str  # X-YouTube-Client-Name
    user_agent: str
    extra_client: Dict[str, Any] = {}
    third_party_embed_url: Optional[str] = None
    requires_sts: bool = False

    class Config:
        frozen = True

    def build_context(self) -> Dict:
        """
        Build the InnerTube context for this identity.
        """
        client = {
            "clientName": self.client_name,
            "clientVersion": self.client_version,
            "gl": "US",
            "hl": "en",
            "timeZone": "UTC",
            "utcOffsetMinutes": 0,
            "userAgent": self.user_agent,
        }
        client.update(self.extra_client)

        context = {
            "client": client,
            "user": {
                "lockedSafetyMode": False
            }
        }

        if self.third_party_embed_url:
            context["thirdParty"] = {"embedUrl": self.third_party_embed_url}

        return context

    def build_headers(self) -> Dict[str, str]:
        return {
            "User-Agent": self.user_agent,
            "Content-Type": "application/json",
            "X-YouTube-Client-Name": self.client_id,
            "X-YouTube-Client-Version": self.client_version,
            "Origin": ProxyConfig.ORIGIN_BASE,
        }


# Mobile app identity: tends to return plain URLs and is blocked less often
ANDROID = ClientVariant(
    name="ANDROID",
    client_name="ANDROID",
    client_version=ProxyConfig.ANDROID_CLIENT_VERSION,
    client_id="3",
    user_agent=(
        f"com.google.android.youtube/{ProxyConfig.ANDROID_CLIENT_VERSION} "
        "(Linux; U; Android 11) gzip"
    ),
    extra_client={
        "androidSdkVersion": ProxyConfig.ANDROID_SDK_VERSION,
        "osName": "Android",
        "osVersion": "11",
    },
)

WEB = ClientVariant(
    name="WEB",
    client_name="WEB",
    client_version=ProxyConfig.WEB_CLIENT_VERSION,
    client_id="1",
    user_agent="Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    requires_sts=True,
)

# Embedded TV player: answers for many age/embedding restricted videos
TV_EMBEDDED = ClientVariant(
    name="TV_EMBEDDED",
    client_name="TVHTML5_SIMPLY_EMBEDDED_PLAYER",
    client_version=ProxyConfig.TV_EMBEDDED_CLIENT_VERSION,
    client_id="85",
    user_agent="Mozilla/5.0 (PlayStation; PlayStation 4/12.00) AppleWebKit/605.1.15 (KHTML, like Gecko)",
    third_party_embed_url=f"{ProxyConfig.ORIGIN_BASE}/",
    requires_sts=True,
)

CLIENT_VARIANTS = {variant.name: variant for variant in (ANDROID, WEB, TV_EMBEDDED)}
