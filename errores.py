"""
Excepciones de dominio. Cada una lleva el código HTTP con el que main.py
la devuelve dentro del sobre {success, message}.
"""


class ErrorRenta(Exception):
    codigo_http = 500

    def __init__(self, mensaje: str):
        super().__init__(mensaje)
        self.mensaje = mensaje


class ArgumentoInvalido(ErrorRenta):
    codigo_http = 400


class RangoFechasInvalido(ArgumentoInvalido):
    pass


class NoEncontrado(ErrorRenta):
    codigo_http = 404


class Conflicto(ErrorRenta):
    codigo_http = 409


class Duplicado(Conflicto):
    codigo_http = 400


class NoAutorizado(ErrorRenta):
    codigo_http = 403


class ErrorInterno(ErrorRenta):
    codigo_http = 500
