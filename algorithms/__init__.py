from .weight_converter import WeightConverter, HeightConverter, UnitFormatter

__all__ = ["WeightConverter", "HeightConverter", "UnitFormatter"]
