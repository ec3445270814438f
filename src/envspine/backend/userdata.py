"""Boot scripts for environment cluster hosts.

Each operating system has a default Jinja2 template under ``templates/``.
A caller may supply its own template instead. Templates see two
variables:

    ``cluster_name``  provider cluster name the ECS agent joins
    ``s3_bucket``     artifact bucket holding ``bootstrap/dockercfg``

Undefined variables are an error rather than silently rendering empty.
The rendered script is returned base64-encoded, ready for a launch
configuration.
"""

from __future__ import annotations

import base64

from jinja2 import Environment, PackageLoader, StrictUndefined, TemplateError

from envspine.core.errors import ValidationError
from envspine.models import OperatingSystem

DEFAULT_TEMPLATES = {
    OperatingSystem.LINUX: "linux_userdata.sh.j2",
    OperatingSystem.WINDOWS: "windows_userdata.ps1.j2",
}

_env = Environment(
    loader=PackageLoader("envspine.backend", "templates"),
    undefined=StrictUndefined,
    autoescape=False,
)


def render_user_data(
    operating_system: OperatingSystem,
    *,
    cluster_name: str,
    s3_bucket: str,
    template: str = "",
) -> str:
    """Render and base64-encode the boot script for a new environment.

    Args:
        operating_system: Selects the default template.
        cluster_name: Provider cluster name substituted into the script.
        s3_bucket: Artifact bucket substituted into the script.
        template: Optional template source overriding the OS default.

    Raises:
        ValidationError: If the template cannot be parsed or rendered.
    """
    try:
        if template:
            compiled = _env.from_string(template)
        else:
            compiled = _env.get_template(DEFAULT_TEMPLATES[operating_system])
        rendered = compiled.render(cluster_name=cluster_name, s3_bucket=s3_bucket)
    except TemplateError as exc:
        raise ValidationError(f"Failed to render user data: {exc}", cause=exc) from exc

    return base64.b64encode(rendered.encode("utf-8")).decode("ascii")
