from storop.handlers import (
    csidriverdeployment,
    provisioners,
    children,
    probes,
)

__all__ = [
    "csidriverdeployment",
    "provisioners",
    "children",
    "probes",
]
