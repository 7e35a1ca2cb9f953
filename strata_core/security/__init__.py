from .protector import PROTECTED_PREFIX, SensitiveDataProtector

__all__ = ["PROTECTED_PREFIX", "SensitiveDataProtector"]
