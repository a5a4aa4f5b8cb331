"""Exception hierarchy shared by the cmgen stages."""


class CmgenError(Exception):
    pass


class InputError(CmgenError):
    """The input image, a parameter, or an option string was rejected."""


class ImageDecodeError(CmgenError):
    pass
