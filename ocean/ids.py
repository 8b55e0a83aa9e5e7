"""Type safe identifiers for server side resources.

Every resource kind has its own identifier class. Two identifiers are only
equal if they have the same class *and* the same raw value, ie a `DropletId`
can never be mistaken for an `SshKeyId` even though both wrap an integer.
"""


class _Id:
    __slots__ = ("_value",)
    _kind: type = object

    def __init__(self, value):
        name = type(self).__name__
        if value is None:
            raise TypeError(f"{name} must not be None")
        if isinstance(value, bool) or not isinstance(value, self._kind):
            raise TypeError(f"{name} must be {self._kind.__name__} (got {value!r})")
        object.__setattr__(self, "_value", value)

    def __setattr__(self, name, value):
        raise AttributeError(f"{type(self).__name__} is immutable")

    def __reduce__(self):
        return (type(self), (self._value,))

    @property
    def value(self):
        return self._value

    def __eq__(self, other):
        return type(other) is type(self) and other._value == self._value

    def __hash__(self):
        return hash((type(self), self._value))

    def __str__(self) -> str:
        return str(self._value)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._value!r})"


class StringId(_Id):
    __slots__ = ()
    _kind = str

    def __init__(self, value: str):
        super().__init__(value)
        if value.strip() == "":
            raise ValueError(f"{type(self).__name__} must be nonempty")
        if value.strip() != value:
            raise ValueError(
                f"{type(self).__name__} must not have leading or trailing whitespace"
            )


class IntegerId(_Id):
    __slots__ = ()
    _kind = int


# ----------------------------------------------------------------------
# Identifiers of the individual resource kinds.
# ----------------------------------------------------------------------
class DropletId(IntegerId):
    __slots__ = ()


class SshKeyId(IntegerId):
    __slots__ = ()


class KubernetesId(StringId):
    __slots__ = ()


class NodePoolId(StringId):
    __slots__ = ()


class DatabaseId(StringId):
    __slots__ = ()


class VpcId(StringId):
    __slots__ = ()


class RegionId(StringId):
    __slots__ = ()


class ProjectId(StringId):
    __slots__ = ()


class DropletTypeId(StringId):
    """Size slug, eg `s-1vcpu-1gb`."""

    __slots__ = ()


class ImageId(StringId):
    """Image slug (eg `ubuntu-24-04-x64`) or the numeric ID as a string."""

    __slots__ = ()


class ContainerImageId(StringId):
    """Digest of a container image manifest, eg `sha256:...`."""

    __slots__ = ()
