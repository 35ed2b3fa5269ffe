"""보행 제어기 예외"""


class ConfigError(ValueError):
    """알 수 없는 plan 이름, 필수 필드 누락 등 설정 오류."""


class InvalidPlanTransition(RuntimeError):
    """cursor 불변식을 깨는 plan 전이 (연속 rewind 등)."""


class StalePreviewError(RuntimeError):
    """preview 유효 구간 밖에서 샘플링."""
