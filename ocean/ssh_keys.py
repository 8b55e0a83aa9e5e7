import base64
import binascii
import hashlib

from pydantic import field_validator

from ocean.ids import SshKeyId
from ocean.models import valid_text
from ocean.resource import Builder, ManagedSnapshot, ResourceAdapter
from ocean.transport import get_int, get_str


def fingerprint(public_key: str) -> str:
    """Return the MD5 fingerprint of an OpenSSH public key.

    Example: `ssh-ed25519 AAAA... user@host` -> `3b:16:bf:e4:...`.
    """
    parts = public_key.split()
    if len(parts) < 2:
        raise ValueError("must have the form `<type> <base64 key> [comment]`")
    try:
        blob = base64.b64decode(parts[1], validate=True)
    except binascii.Error:
        raise ValueError("key is not valid base64") from None
    digest = hashlib.md5(blob).hexdigest()
    return str.join(":", [digest[i : i + 2] for i in range(0, len(digest), 2)])


class SshKey(ManagedSnapshot):
    id: SshKeyId
    name: str
    fingerprint: str
    public_key: str


class SshKeyBuilder(Builder):
    name: str
    public_key: str

    @field_validator("name")
    @classmethod
    def valid_name(cls, v: str) -> str:
        return valid_text(v)

    @field_validator("public_key")
    @classmethod
    def valid_key(cls, v: str) -> str:
        v = v.strip()
        fingerprint(v)
        return v

    @property
    def fingerprint(self) -> str:
        return fingerprint(self.public_key)

    def set_name(self, name: str) -> "SshKeyBuilder":
        self.name = name
        return self

    def to_server(self) -> dict:
        return {"name": self.name, "public_key": self.public_key}


class SshKeyAdapter(ResourceAdapter):
    label = "SSH key"
    collection_path = "/v2/account/keys"
    collection_key = "ssh_keys"
    item_key = "ssh_key"
    conflict_phrases = ("already in use",)

    def parse(self, data: dict) -> SshKey:
        key = SshKey(
            id=SshKeyId(get_int(data, "id")),
            name=get_str(data, "name"),
            fingerprint=get_str(data, "fingerprint"),
            public_key=get_str(data, "public_key", ""),
        )
        return self.bind(key)

    def builder(self, name: str, public_key: str) -> SshKeyBuilder:
        ret = SshKeyBuilder(name=name, public_key=public_key)
        ret._adapter = self
        return ret

    def get_by_fingerprint(self, value: str) -> SshKey | None:
        return self.find(lambda _: _.fingerprint == value)

    def find_conflict(self, builder: SshKeyBuilder) -> SshKey | None:
        # The server rejects duplicate keys, not duplicate names.
        return self.get_by_fingerprint(builder.fingerprint)

    def unchangeable(self, live: SshKey, target: SshKeyBuilder) -> dict:
        return {"fingerprint": (live.fingerprint, target.fingerprint)}

    def matches(self, live: SshKey, target: SshKeyBuilder) -> bool:
        return live.name == target.name and live.fingerprint == target.fingerprint

    def build_patch(self, live: SshKey, target: SshKeyBuilder) -> dict:
        return {"name": target.name}
