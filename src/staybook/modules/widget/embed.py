"""Embed code generator for the booking widget."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape

from staybook.config import section
from staybook.errors import ValidationError

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"

_HEX_COLOR = re.compile(r"^#(?:[0-9a-fA-F]{3}){1,2}$")

_jinja_env = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=select_autoescape(default=False),
)


@dataclass
class WidgetConfig:
    property_ids: list[int]
    title: str = "Book Your Stay"
    subtitle: str = "Select a property, dates, and complete your booking"
    primary_color: str = "#0EA5E9"
    secondary_color: str = "#D3E4FD"
    allow_special_requests: bool = True
    border_radius: str = "1rem"
    font_family: str | None = None
    api_key: str = "YOUR_API_KEY"

    def validate(self) -> None:
        if not self.property_ids:
            raise ValidationError("Select at least one property for the widget")
        for name in ("primary_color", "secondary_color"):
            if not _HEX_COLOR.match(getattr(self, name)):
                raise ValidationError(f"{name} must be a hex color like #0EA5E9")

    def to_client_config(self) -> dict:
        config = {
            "propertyIds": [str(pid) for pid in self.property_ids],
            "title": self.title,
            "subtitle": self.subtitle,
            "primaryColor": self.primary_color,
            "secondaryColor": self.secondary_color,
            "allowSpecialRequests": self.allow_special_requests,
            "borderRadius": self.border_radius,
            "apiKey": self.api_key,
        }
        if self.font_family:
            config["fontFamily"] = self.font_family
        return config


def render_embed_code(widget: WidgetConfig) -> str:
    """HTML snippet an owner pastes into their site."""
    widget.validate()
    cfg = section("widget")
    template = _jinja_env.get_template("embed.html.j2")
    return template.render(
        container_id=cfg.get("container_id", "booking-widget-container"),
        script_url=cfg.get("script_url", "https://bookings.example.com/widget.js"),
        stylesheet_url=cfg.get("stylesheet_url", "https://bookings.example.com/widget.css"),
        # "</" is escaped so titles cannot close the script tag
        config_json=json.dumps(widget.to_client_config(), indent=6).replace("</", "<\\/"),
    )
