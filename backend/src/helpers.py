import re
from typing import Optional

_NON_DIGITS = re.compile(r"\D")
_CNPJ = re.compile(r"^(\d{2})(\d{3})(\d{3})(\d{4})(\d{2})$")
_PHONE_11 = re.compile(r"^(\d{2})(\d{5})(\d{4})$")
_PHONE_10 = re.compile(r"^(\d{2})(\d{4})(\d{4})$")


def only_digits(value: Optional[str]) -> str:
    if not value:
        return ""
    return _NON_DIGITS.sub("", str(value))


def mask_cnpj(value: Optional[str]) -> str:
    """
    Formata um CNPJ como NN.NNN.NNN/NNNN-NN.

    Remove tudo que não for dígito; o padrão só é aplicado quando há
    exatamente 14 dígitos, caso contrário os dígitos voltam sem máscara.
    Exemplo: '12345678000195' -> '12.345.678/0001-95'
    """
    digits = only_digits(value)
    return _CNPJ.sub(r"\1.\2.\3/\4-\5", digits)


def mask_phone(value: Optional[str]) -> str:
    """
    Formata telefone/WhatsApp: 11 dígitos -> (NN) NNNNN-NNNN,
    10 dígitos -> (NN) NNNN-NNNN. Outros tamanhos ficam só com os dígitos.
    """
    digits = only_digits(value)
    if len(digits) == 11:
        return _PHONE_11.sub(r"(\1) \2-\3", digits)
    return _PHONE_10.sub(r"(\1) \2-\3", digits)


def compute_preco_total(quantidade: float, preco_unitario: float) -> float:
    return round(float(quantidade) * float(preco_unitario), 2)
