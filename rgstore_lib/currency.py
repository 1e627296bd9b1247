def round_money(amount) -> float:
    """
    Round an amount to paise (2 decimal places).
    """
    return round(float(amount), 2)


def format_inr(amount: float) -> str:
    """
    Format a number as Indian Rupees.
    """
    return f"₹{amount:.2f}"


def to_paise(amount: float) -> int:
    """
    Convert rupees to paise, as payment gateways expect.
    """
    return int(round(float(amount) * 100))
