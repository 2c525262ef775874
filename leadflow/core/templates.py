"""
WhatsApp Templates
==================
Canned outbound messages with {placeholders}.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional
from urllib.parse import quote

from leadflow.core.phone import to_messaging_form

PLACEHOLDER = re.compile(r"\{(\w+)\}")


@dataclass(frozen=True)
class WhatsAppTemplate:
    code: str
    name: str
    message: str
    variables: List[str] = field(default_factory=list)
    is_active: bool = True


DEFAULT_TEMPLATES = [
    WhatsAppTemplate(
        code="FIRST_CONTACT",
        name="İlk İletişim",
        message=(
            "Merhaba {name}, temsilciliğimiz hakkında bilgi almak istediğinizi öğrendim. "
            "Size detaylı bilgi verebilirim. Uygun olduğunuz bir zaman var mı?"
        ),
        variables=["name"],
    ),
    WhatsAppTemplate(
        code="APPOINTMENT_REMINDER",
        name="Randevu Hatırlatması",
        message=(
            "Merhaba {name}, yarın saat {time} randevumuz var. Görüşmemizi dört gözle "
            "bekliyorum. Herhangi bir değişiklik olursa lütfen bana bildirin."
        ),
        variables=["name", "time"],
    ),
    WhatsAppTemplate(
        code="FOLLOW_UP",
        name="Takip Mesajı",
        message=(
            "Merhaba {name}, geçen görüşmemizden sonra düşündünüz mü? "
            "Sorularınız varsa çekinmeden sorabilirsiniz."
        ),
        variables=["name"],
    ),
]


class TemplateCatalog:
    def __init__(self, templates: Optional[List[WhatsAppTemplate]] = None):
        self._templates: Dict[str, WhatsAppTemplate] = {
            t.code: t for t in (DEFAULT_TEMPLATES if templates is None else templates)
        }

    def list(self) -> List[WhatsAppTemplate]:
        return [t for t in self._templates.values() if t.is_active]

    def get(self, code: str) -> Optional[WhatsAppTemplate]:
        template = self._templates.get(code)
        return template if template and template.is_active else None

    def render(self, code: str, variables: Mapping[str, str]) -> str:
        template = self.get(code)
        if template is None:
            raise KeyError(f"Unknown WhatsApp template '{code}'")
        return render_message(template.message, variables)


def render_message(message: str, variables: Mapping[str, str]) -> str:
    """Fill known placeholders; unknown ones stay in the text for the agent to see."""
    return PLACEHOLDER.sub(lambda m: variables.get(m.group(1)) or m.group(0), message)


def whatsapp_link(phone: str, message: str) -> str:
    number = to_messaging_form(phone).lstrip("+")
    return f"https://wa.me/{number}?text={quote(message)}"
