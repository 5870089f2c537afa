"""Material (MATE) and camera (CAME) chunk decoding.

MATE payload layout (big-endian):
- name, shader: uint16 length + UTF-8
- flags: uint8
- ambient, diffuse, stencil channels
- two auxiliary strings
- colorize, emission channels
- alpha texture name
- two float32
- lightmap diffuse and lightmap specular texture names
- two uint32

Each channel is a presence byte followed by either a texture name string
(non-zero) or a packed ARGB uint32 (zero). Values are kept as stored.

CAME payload layout: name, then 5 float32 (unknown, fov, aspect ratio,
near plane, far plane).
"""
from dataclasses import dataclass
from typing import Optional, Tuple

from sc3d_reader import ByteReader


@dataclass
class MaterialChannel:
    """Either a texture reference or a packed ARGB color."""
    texture: Optional[str] = None
    color: Optional[int] = None

    @property
    def is_texture(self) -> bool:
        return self.texture is not None

    @property
    def argb(self) -> Optional[Tuple[int, int, int, int]]:
        """Color unpacked to (a, r, g, b) bytes, or None for textures."""
        if self.color is None:
            return None
        c = self.color
        return ((c >> 24) & 0xFF, (c >> 16) & 0xFF, (c >> 8) & 0xFF, c & 0xFF)


@dataclass
class Material:
    name: str
    shader: str
    flags: int
    ambient: MaterialChannel
    diffuse: MaterialChannel
    stencil: MaterialChannel
    aux_a: str
    aux_b: str
    colorize: MaterialChannel
    emission: MaterialChannel
    alpha_texture: str
    trailing_floats: Tuple[float, float]
    lightmap_diffuse: str
    lightmap_specular: str
    trailing_values: Tuple[int, int]


@dataclass
class Camera:
    name: str
    unknown: float
    fov: float
    aspect_ratio: float
    near: float
    far: float


def read_channel(reader: ByteReader) -> MaterialChannel:
    if reader.u8():
        return MaterialChannel(texture=reader.string())
    return MaterialChannel(color=reader.u32())


def decode_material(reader: ByteReader) -> Material:
    """Decode a MATE chunk payload."""
    name = reader.string()
    shader = reader.string()
    flags = reader.u8()
    ambient = read_channel(reader)
    diffuse = read_channel(reader)
    stencil = read_channel(reader)
    aux_a = reader.string()
    aux_b = reader.string()
    colorize = read_channel(reader)
    emission = read_channel(reader)
    alpha_texture = reader.string()
    trailing_floats = reader.unpack("2f")
    lightmap_diffuse = reader.string()
    lightmap_specular = reader.string()
    trailing_values = reader.unpack("2I")
    return Material(
        name=name,
        shader=shader,
        flags=flags,
        ambient=ambient,
        diffuse=diffuse,
        stencil=stencil,
        aux_a=aux_a,
        aux_b=aux_b,
        colorize=colorize,
        emission=emission,
        alpha_texture=alpha_texture,
        trailing_floats=trailing_floats,
        lightmap_diffuse=lightmap_diffuse,
        lightmap_specular=lightmap_specular,
        trailing_values=trailing_values,
    )


def decode_camera(reader: ByteReader) -> Camera:
    """Decode a CAME chunk payload."""
    name = reader.string()
    unknown, fov, aspect_ratio, near, far = reader.unpack("5f")
    return Camera(
        name=name,
        unknown=unknown,
        fov=fov,
        aspect_ratio=aspect_ratio,
        near=near,
        far=far,
    )
