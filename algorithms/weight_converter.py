class WeightConverter:
    """Utility for converting between kg and lb."""

    KG_TO_LB = 2.20462

    @staticmethod
    def kg_to_lb(kg: float) -> float:
        return round(kg * WeightConverter.KG_TO_LB, 2)

    @staticmethod
    def lb_to_kg(lb: float) -> float:
        return round(lb / WeightConverter.KG_TO_LB, 2)


class HeightConverter:
    """Utility for converting between cm and inches."""

    CM_PER_INCH = 2.54

    @staticmethod
    def cm_to_in(cm: float) -> float:
        return round(cm / HeightConverter.CM_PER_INCH, 2)

    @staticmethod
    def in_to_cm(inches: float) -> float:
        return round(inches * HeightConverter.CM_PER_INCH, 2)

    @staticmethod
    def cm_to_feet_inches(cm: float) -> tuple[int, int]:
        total = cm / HeightConverter.CM_PER_INCH
        return int(total // 12), round(total % 12)


class UnitFormatter:
    """Display helpers for a profile's unit preference.

    Values are stored metric; imperial users see and type pounds and inches.
    """

    def __init__(self, unit_preference: str = "metric") -> None:
        self.imperial = unit_preference == "imperial"

    @property
    def weight_unit(self) -> str:
        return "lb" if self.imperial else "kg"

    @property
    def height_unit(self) -> str:
        return "in" if self.imperial else "cm"

    unit_label = weight_unit

    def convert_from_kg(self, kg: float) -> float:
        return kg * WeightConverter.KG_TO_LB if self.imperial else kg

    def parse_input_to_kg(self, value: str) -> float:
        number = float(value)
        return number / WeightConverter.KG_TO_LB if self.imperial else number

    def format_weight(self, kg: float, decimals: int = 1) -> str:
        return f"{round(self.convert_from_kg(kg), decimals)}{self.weight_unit}"

    def convert_from_cm(self, cm: float) -> float:
        return cm / HeightConverter.CM_PER_INCH if self.imperial else cm

    def parse_input_to_cm(self, value: str) -> float:
        number = float(value)
        return number * HeightConverter.CM_PER_INCH if self.imperial else number

    def format_height(self, cm: float, decimals: int = 1) -> str:
        return f"{round(self.convert_from_cm(cm), decimals)}{self.height_unit}"
