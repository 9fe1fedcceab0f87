"""Exception hierarchy for serial_screen"""


class SerialException(OSError):
    def __init__(
        self,
        message: str,
        port: str | None = None,
    ):
        super().__init__(f"{port}: {message}" if port else message)
        self.port = port


class SerialScanException(SerialException):
    pass


class SerialOpenException(SerialException):
    pass


class SerialOpenBusy(SerialOpenException):
    pass


class SerialAttrReadException(SerialOpenException):
    pass


class SerialBaudUnsupported(SerialOpenException):
    pass


class SerialAttrWriteException(SerialOpenException):
    pass


class SerialIoException(SerialException):
    pass


class SerialIoClosed(SerialIoException):
    pass


class SerialReadException(SerialIoException):
    pass


class SerialWriteException(SerialIoException):
    pass
