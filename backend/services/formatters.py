"""
Máscaras de documentos e telefones (CPF, CNPJ, CEP, telefone BR).

As máscaras são progressivas: um valor parcial recebe apenas os separadores
que já cabem nele, como no preenchimento de formulário.
"""

import re

NON_DIGITS = re.compile(r"\D+")


def only_digits(value: str) -> str:
    return NON_DIGITS.sub("", value or "")


def format_cpf(value: str) -> str:
    """000.000.000-00"""
    digits = only_digits(value)[:11]

    part1 = digits[0:3]
    part2 = digits[3:6]
    part3 = digits[6:9]
    part4 = digits[9:11]

    if len(digits) <= 3:
        return part1
    if len(digits) <= 6:
        return f"{part1}.{part2}"
    if len(digits) <= 9:
        return f"{part1}.{part2}.{part3}"
    return f"{part1}.{part2}.{part3}-{part4}"


def format_cnpj(value: str) -> str:
    """00.000.000/0000-00"""
    digits = only_digits(value)[:14]

    part1 = digits[0:2]
    part2 = digits[2:5]
    part3 = digits[5:8]
    part4 = digits[8:12]
    part5 = digits[12:14]

    if len(digits) <= 2:
        return part1
    if len(digits) <= 5:
        return f"{part1}.{part2}"
    if len(digits) <= 8:
        return f"{part1}.{part2}.{part3}"
    if len(digits) <= 12:
        return f"{part1}.{part2}.{part3}/{part4}"
    return f"{part1}.{part2}.{part3}/{part4}-{part5}"


def format_cep(value: str) -> str:
    digits = only_digits(value)[:8]
    if len(digits) <= 5:
        return digits
    return f"{digits[:5]}-{digits[5:]}"


def format_phone(value: str) -> str:
    """
    (00) 0000-0000 para fixo, (00) 00000-0000 para celular.
    """
    digits = only_digits(value)[:11]

    if len(digits) <= 2:
        return digits

    ddd = digits[:2]
    remaining = digits[2:]

    if len(remaining) <= 4:
        return f"({ddd}) {remaining}"

    if len(remaining) <= 8:
        return f"({ddd}) {remaining[:4]}-{remaining[4:]}"

    return f"({ddd}) {remaining[:5]}-{remaining[5:]}"


def format_document(value: str) -> str:
    """CPF até 11 dígitos, CNPJ acima disso."""
    digits = only_digits(value)
    if len(digits) <= 11:
        return format_cpf(digits)
    return format_cnpj(digits)
