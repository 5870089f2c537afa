"""glTF exporter for SC3D containers."""
import logging
import math
import struct
from pathlib import Path
from typing import BinaryIO, Dict, List, Optional, Sequence, Tuple, Union

from pygltflib import (
    GLTF2,
    Accessor,
    Animation,
    AnimationChannel,
    AnimationChannelTarget,
    AnimationSampler,
    Asset,
    Attributes,
    Buffer,
    BufferView,
    Material as GLTFMaterial,
    Mesh as GLTFMesh,
    Node as GLTFNode,
    PbrMetallicRoughness,
    Primitive,
    Scene,
    Skin,
)

from sc3d_geometry import Geometry
from sc3d_parser import SC3DFile

logger = logging.getLogger(__name__)

DEFAULT_FRAME_RATE = 30

FLOAT = 5126
UNSIGNED_BYTE = 5121
ARRAY_BUFFER = 34962
TRIANGLES = 4


def _compute_bounds(values: Sequence[Tuple[float, ...]]) -> Tuple[List[float], List[float]]:
    """Compute per-component min/max bounds."""
    size = len(values[0])
    min_bounds = [float("inf")] * size
    max_bounds = [float("-inf")] * size
    for v in values:
        for i in range(size):
            min_bounds[i] = min(min_bounds[i], v[i])
            max_bounds[i] = max(max_bounds[i], v[i])
    return min_bounds, max_bounds


def _is_skinned(geometry: Geometry) -> bool:
    """Joints plus exactly one vertex weight per position."""
    return bool(geometry.joints) and len(geometry.weights) == len(geometry.positions)


def _normalize_quaternion(rotation: Sequence[float]) -> List[float]:
    length = math.sqrt(sum(c * c for c in rotation))
    if length == 0.0:
        return [0.0, 0.0, 0.0, 1.0]
    return [c / length for c in rotation]


def _clamp_color(color: Sequence[float]) -> Tuple[float, ...]:
    return tuple(min(max(c, 0.0), 1.0) for c in color)


def _lookup(values: Sequence, index: int, what: str, geometry: Geometry):
    if not 0 <= index < len(values):
        raise ValueError(f"{what} index {index} out of range in geometry {geometry.name!r}")
    return values[index]


class _GLTFBuilder:
    """Accumulates glTF objects and the single binary buffer behind them."""

    def __init__(self):
        self.gltf = GLTF2()
        self.gltf.asset = Asset(version="2.0", generator="SC3D Extractor")
        self.blob = bytearray()

    def add_accessor(
        self,
        values: Sequence[Tuple],
        fmt: str,
        component_type: int,
        accessor_type: str,
        target: Optional[int] = None,
        bounds: bool = False,
    ) -> int:
        """Pack values into the buffer and return the new accessor index."""
        data = b"".join(struct.pack(fmt, *v) for v in values)
        offset = len(self.blob)
        self.blob += data
        # Keep every buffer view 4-byte aligned
        if len(self.blob) % 4 != 0:
            self.blob += b"\x00" * (4 - len(self.blob) % 4)

        self.gltf.bufferViews.append(
            BufferView(buffer=0, byteOffset=offset, byteLength=len(data), target=target)
        )
        accessor = Accessor(
            bufferView=len(self.gltf.bufferViews) - 1,
            componentType=component_type,
            count=len(values),
            type=accessor_type,
        )
        if bounds:
            accessor.min, accessor.max = _compute_bounds(values)
        self.gltf.accessors.append(accessor)
        return len(self.gltf.accessors) - 1

    def save(self, output_path: str):
        self.gltf.buffers = [Buffer(byteLength=len(self.blob))]
        self.gltf.set_binary_blob(bytes(self.blob))
        self.gltf.save(output_path)


class GLTFExporter:
    """Exports a decoded SC3D container to glTF/GLB."""

    def __init__(self, source: Union[str, Path, BinaryIO, bytes, SC3DFile], resolver=None,
                 libraries: Sequence[SC3DFile] = ()):
        """Initialize exporter.

        Args:
            source: Path, file-like object, bytes or an SC3DFile
            resolver: Optional LibraryResolver for geometries that live in
                the header's library
            libraries: Extra loaded containers searched after the header's
                library chain
        """
        self.source = source
        self.resolver = resolver
        self.libraries = list(libraries)
        self._container: Optional[SC3DFile] = None

    def _load(self) -> SC3DFile:
        if self._container is None:
            if isinstance(self.source, SC3DFile):
                self._container = self.source.load()
            else:
                self._container = SC3DFile.open(self.source)
        return self._container

    def _containers(self, container: SC3DFile) -> List[SC3DFile]:
        """The container, its library chain, then the extra libraries."""
        chain = [container]
        if self.resolver is not None:
            library = container.resolve_library(self.resolver)
            while library is not None and all(library is not c for c in chain):
                chain.append(library)
                library = library.resolve_library(self.resolver)
        chain.extend(lib for lib in self.libraries if all(lib is not c for c in chain))
        return chain

    def _find_geometry(self, chain: List[SC3DFile], name: str) -> Optional[Geometry]:
        for container in chain:
            geometry = container.get_geometry(name)
            if geometry is not None:
                return geometry
        return None

    def _material_index(self, builder: _GLTFBuilder, chain: List[SC3DFile], name: str,
                        cache: Dict[str, int]) -> int:
        if name in cache:
            return cache[name]

        material = GLTFMaterial(name=name)
        source = next((m for m in (c.get_material(name) for c in chain) if m is not None), None)
        if source is not None and source.diffuse.argb is not None:
            a, r, g, b = source.diffuse.argb
            material.pbrMetallicRoughness = PbrMetallicRoughness(
                baseColorFactor=[r / 255.0, g / 255.0, b / 255.0, a / 255.0]
            )
        builder.gltf.materials.append(material)
        cache[name] = len(builder.gltf.materials) - 1
        return cache[name]

    def _build_mesh(self, builder: _GLTFBuilder, chain: List[SC3DFile], geometry: Geometry,
                    include_skeleton: bool, material_cache: Dict[str, int]) -> Optional[int]:
        """Add a glTF mesh for geometry, one primitive per SC3D mesh.

        Corners are expanded without an index buffer so that per-corner
        normal and texcoord indices are kept.
        """
        positions = geometry.positions
        if not positions:
            return None
        normals = geometry.normals
        uvs = geometry.texcoords(0)
        colors = geometry.colors
        skinned = include_skeleton and _is_skinned(geometry)
        if include_skeleton and geometry.joints and not skinned:
            logger.warning(
                f"GEOM {geometry.name}: {len(geometry.weights)} weights for "
                f"{len(positions)} vertices, exporting without skin"
            )

        primitives = []
        for mesh in geometry.meshes:
            corners = [c for t in mesh.triangles for c in t.corners]
            if not corners:
                continue

            attributes = Attributes()
            attributes.POSITION = builder.add_accessor(
                [_lookup(positions, c.vertex, "Vertex", geometry) for c in corners],
                "<3f", FLOAT, "VEC3", target=ARRAY_BUFFER, bounds=True,
            )
            if normals and all(c.normal is not None for c in corners):
                attributes.NORMAL = builder.add_accessor(
                    [_lookup(normals, c.normal, "Normal", geometry) for c in corners],
                    "<3f", FLOAT, "VEC3", target=ARRAY_BUFFER,
                )
            if uvs and all(c.texcoord is not None for c in corners):
                attributes.TEXCOORD_0 = builder.add_accessor(
                    [_lookup(uvs, c.texcoord, "Texcoord", geometry) for c in corners],
                    "<2f", FLOAT, "VEC2", target=ARRAY_BUFFER,
                )
            if colors and all(c.color is not None for c in corners):
                attributes.COLOR_0 = builder.add_accessor(
                    [_clamp_color(_lookup(colors, c.color, "Color", geometry)) for c in corners],
                    "<4f", FLOAT, "VEC4", target=ARRAY_BUFFER,
                )
            if skinned:
                weights = [geometry.weights[c.vertex] for c in corners]
                attributes.JOINTS_0 = builder.add_accessor(
                    [w.joints for w in weights], "<4B", UNSIGNED_BYTE, "VEC4", target=ARRAY_BUFFER,
                )
                attributes.WEIGHTS_0 = builder.add_accessor(
                    [w.weights for w in weights], "<4f", FLOAT, "VEC4", target=ARRAY_BUFFER,
                )

            primitives.append(Primitive(
                attributes=attributes,
                mode=TRIANGLES,
                material=self._material_index(builder, chain, mesh.material, material_cache),
            ))

        if not primitives:
            return None
        builder.gltf.meshes.append(GLTFMesh(name=geometry.name, primitives=primitives))
        return len(builder.gltf.meshes) - 1

    def _build_skin(self, builder: _GLTFBuilder, geometry: Geometry, node_indices: Dict[str, int],
                    scene_nodes: List[int]) -> int:
        """Add a skin whose joints are the nodes named after the geometry joints."""
        joints = []
        for joint in geometry.joints:
            if joint.name not in node_indices:
                builder.gltf.nodes.append(GLTFNode(name=joint.name))
                node_indices[joint.name] = len(builder.gltf.nodes) - 1
                scene_nodes.append(node_indices[joint.name])
            joints.append(node_indices[joint.name])

        ibm_accessor = builder.add_accessor(
            [joint.matrix for joint in geometry.joints], "<16f", FLOAT, "MAT4",
        )
        builder.gltf.skins.append(Skin(joints=joints, inverseBindMatrices=ibm_accessor))
        return len(builder.gltf.skins) - 1

    def _build_animation(self, builder: _GLTFBuilder, container: SC3DFile) -> Optional[Animation]:
        header = container.header
        frame_rate = header.frame_rate if header and header.frame_rate > 0 else DEFAULT_FRAME_RATE

        samplers = []
        channels = []
        for node_idx, node in enumerate(container.nodes()):
            if len(node.frames) < 2:
                continue

            times = [(frame.index / frame_rate,) for frame in node.frames]
            time_acc = builder.add_accessor(times, "<f", FLOAT, "SCALAR", bounds=True)
            outputs = (
                ("translation", [f.position for f in node.frames], "<3f", "VEC3"),
                ("rotation", [_normalize_quaternion(f.rotation) for f in node.frames], "<4f", "VEC4"),
                ("scale", [f.scale for f in node.frames], "<3f", "VEC3"),
            )
            for path, values, fmt, accessor_type in outputs:
                output_acc = builder.add_accessor(values, fmt, FLOAT, accessor_type)
                samplers.append(AnimationSampler(input=time_acc, output=output_acc, interpolation="LINEAR"))
                channels.append(AnimationChannel(
                    sampler=len(samplers) - 1,
                    target=AnimationChannelTarget(node=node_idx, path=path),
                ))

        if not channels:
            return None
        return Animation(name="animation", samplers=samplers, channels=channels)

    def export(self, output_path: str, include_skeleton: bool = False, include_animations: bool = False):
        """Export the container to a glTF/GLB file.

        Args:
            output_path: Path for output .glb file
            include_skeleton: Whether to include skins built from geometry joints
            include_animations: Whether to include node keyframe animations

        Raises:
            ValueError: If no mesh data found in the container
        """
        container = self._load()
        chain = self._containers(container)
        builder = _GLTFBuilder()
        gltf = builder.gltf
        material_cache: Dict[str, int] = {}
        mesh_cache: Dict[str, Optional[int]] = {}
        skin_cache: Dict[str, int] = {}
        node_indices: Dict[str, int] = {}
        scene_nodes: List[int] = []

        def mesh_for(geometry: Geometry) -> Optional[int]:
            if geometry.name not in mesh_cache:
                mesh_cache[geometry.name] = self._build_mesh(
                    builder, chain, geometry, include_skeleton, material_cache
                )
            return mesh_cache[geometry.name]

        skinned_nodes: List[Tuple[int, Geometry]] = []
        node_list = container.node_list
        if node_list is not None:
            tree = node_list.tree
            for index, node in enumerate(tree.nodes):
                gltf_node = GLTFNode(name=node.name)
                children = tree.children_of(index)
                if children:
                    gltf_node.children = children
                if node.frames:
                    rest = node.frames[0]
                    gltf_node.translation = list(rest.position)
                    gltf_node.rotation = _normalize_quaternion(rest.rotation)
                    gltf_node.scale = list(rest.scale)
                if node.target is not None:
                    geometry = self._find_geometry(chain, node.target.name)
                    if geometry is None:
                        logger.warning(f"Node {node.name}: target {node.target.name} not found")
                    else:
                        gltf_node.mesh = mesh_for(geometry)
                        if gltf_node.mesh is not None and include_skeleton and _is_skinned(geometry):
                            skinned_nodes.append((index, geometry))
                gltf.nodes.append(gltf_node)
                node_indices.setdefault(node.name, index)
            scene_nodes.extend(tree.roots)
        else:
            for geometry in container.geometries():
                mesh_index = mesh_for(geometry)
                if mesh_index is None:
                    continue
                gltf.nodes.append(GLTFNode(name=geometry.name, mesh=mesh_index))
                scene_nodes.append(len(gltf.nodes) - 1)
                if include_skeleton and _is_skinned(geometry):
                    skinned_nodes.append((len(gltf.nodes) - 1, geometry))

        if not gltf.meshes:
            raise ValueError("No mesh data found in SC3D file")

        for node_index, geometry in skinned_nodes:
            if geometry.name not in skin_cache:
                skin_cache[geometry.name] = self._build_skin(builder, geometry, node_indices, scene_nodes)
            gltf.nodes[node_index].skin = skin_cache[geometry.name]

        if include_animations and node_list is not None:
            animation = self._build_animation(builder, container)
            if animation is not None:
                gltf.animations.append(animation)

        gltf.scenes = [Scene(nodes=scene_nodes)]
        gltf.scene = 0
        builder.save(output_path)
