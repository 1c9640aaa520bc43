from .api import load_validate_yaml, validate_dict
from .errors import DSLValidationError
from .models import Arch, DSLConfig, Init, RelativeAttention

__all__ = [
    "Arch",
    "DSLConfig",
    "DSLValidationError",
    "Init",
    "RelativeAttention",
    "load_validate_yaml",
    "validate_dict",
]
