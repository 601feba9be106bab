from ticksentinel.infrastructure.models.position import PositionModel

__all__ = ["PositionModel"]
