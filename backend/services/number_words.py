"""
Valor por extenso em português (reais, sem centavos).
Usado nos contratos e na prévia de valor das indicações.
"""

import math

UNITS = ["", "um", "dois", "tres", "quatro", "cinco", "seis", "sete", "oito", "nove"]
TEENS = [
    "dez", "onze", "doze", "treze", "quatorze",
    "quinze", "dezesseis", "dezessete", "dezoito", "dezenove",
]
TENS = [
    "", "dez", "vinte", "trinta", "quarenta",
    "cinquenta", "sessenta", "setenta", "oitenta", "noventa",
]
HUNDREDS = [
    "", "cento", "duzentos", "trezentos", "quatrocentos",
    "quinhentos", "seiscentos", "setecentos", "oitocentos", "novecentos",
]

SCALE_SINGULAR = ["", "mil", "milhao", "bilhao", "trilhao"]
SCALE_PLURAL = ["", "mil", "milhoes", "bilhoes", "trilhoes"]

MAX_VALUE = 10 ** 15 - 1


class NumberTooLargeError(ValueError):
    """Valor fora da faixa escrita por extenso (até trilhões)."""
    pass


def _below_thousand(n: int) -> str:
    if n == 0:
        return ""
    if n == 100:
        return "cem"

    h, r = divmod(n, 100)
    result = HUNDREDS[h] if h else ""

    if r > 0:
        if result:
            result += " e "
        if r < 10:
            result += UNITS[r]
        elif r < 20:
            result += TEENS[r - 10]
        else:
            t, u = divmod(r, 10)
            result += TENS[t]
            if u > 0:
                result += f" e {UNITS[u]}"

    return result


def number_to_words_ptbr(value: float) -> str:
    """
    1 -> "um real", 2500 -> "dois mil e quinhentos reais",
    1000000 -> "um milhao de reais".
    """
    if not math.isfinite(value) or abs(value) > MAX_VALUE:
        raise NumberTooLargeError(f"Valor fora da faixa para extenso: {value}")

    abs_value = int(abs(value))
    if abs_value == 0:
        return "zero real"
    if abs_value == 1:
        return "um real"

    groups = []
    remaining = abs_value
    index = 0

    while remaining > 0:
        remaining, group_value = divmod(remaining, 1000)
        if group_value > 0:
            text = _below_thousand(group_value)
            if index == 1:
                text = "mil" if group_value == 1 else f"{text} mil"
            elif index >= 2:
                if group_value == 1:
                    text = f"um {SCALE_SINGULAR[index]}"
                else:
                    text = f"{text} {SCALE_PLURAL[index]}"
            groups.append((group_value, text))
        index += 1

    groups.reverse()

    words = ""
    for i, (_, text) in enumerate(groups):
        words += text
        if i + 1 < len(groups):
            next_value = groups[i + 1][0]
            # "e" antes de grupo menor que cem ou centena redonda
            words += " e " if next_value < 100 or next_value % 100 == 0 else " "

    use_de = abs_value >= 1_000_000 and abs_value % 1_000_000 == 0
    return f"{words} {'de ' if use_de else ''}reais"
