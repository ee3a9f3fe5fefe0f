"""Protocol translators, registered by protocol name on import."""

from actuctl.protocols import demo, kiiroo_v2, lovense, wevibe  # noqa: F401
from actuctl.protocols.base import TRANSLATORS, ProtocolTranslator, register, translator_class

__all__ = ["TRANSLATORS", "ProtocolTranslator", "register", "translator_class"]
