from typing import Optional

from boot_service import settings
from boot_service.models import BootVM


class TemplateError(Exception):
    pass


def render_boot_script(vm: BootVM, template_path: Optional[str] = None) -> str:
    """
    Fill the iPXE script template for one VM. The template is re-read on
    every call so it can be edited while the service runs.
    """
    path = template_path or settings.TEMPLATE_PATH
    try:
        with open(path, "r", encoding="utf-8") as f:
            template = f.read()
    except OSError as e:
        raise TemplateError(f"could not read template {path}: {e}") from e
    try:
        return template.format(**vm.template_fields())
    except (KeyError, IndexError, ValueError) as e:
        raise TemplateError(f"could not render template {path}: {e!r}") from e
