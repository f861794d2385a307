"""
Pose Tree - Hierarchy of named pose nodes for the redirected avatar rig
Holds parent/child ownership, local poses and the immutable canonical layout
"""

import logging
import numpy as np
from typing import Dict, Iterator, List, NamedTuple, Optional, Sequence
from scipy.spatial.transform import Rotation as R

from .errors import LayoutError


def quat_wxyz_to_rotation(quat: Sequence[float]) -> R:
    """Convert a [w, x, y, z] quaternion into a scipy Rotation"""
    w, x, y, z = [float(v) for v in quat]
    return R.from_quat([x, y, z, w])


def rotation_to_wxyz(rotation: R) -> np.ndarray:
    """Convert a scipy Rotation into a [w, x, y, z] quaternion"""
    x, y, z, w = rotation.as_quat()
    return np.array([w, x, y, z])


def _frozen_vector(values) -> np.ndarray:
    vector = np.array(values, dtype=float).reshape(3)
    vector.flags.writeable = False
    return vector


class CanonicalPose(NamedTuple):
    """Designed-correct pose of a node relative to its declared parent"""
    position: np.ndarray   # Local position [x, y, z] in meters (read-only)
    rotation: np.ndarray   # Local rotation quaternion [w, x, y, z] (read-only)

    @property
    def rotation_obj(self) -> R:
        return quat_wxyz_to_rotation(self.rotation)

    @classmethod
    def create(cls, position=(0.0, 0.0, 0.0), rotation=(1.0, 0.0, 0.0, 0.0)) -> 'CanonicalPose':
        quat = np.array(rotation, dtype=float).reshape(4)
        norm = np.linalg.norm(quat)
        if not np.isfinite(norm) or norm == 0.0:
            raise LayoutError(f"Canonical rotation {list(rotation)} is not a valid quaternion")
        quat = quat / norm
        quat.flags.writeable = False
        position = _frozen_vector(position)
        if not np.all(np.isfinite(position)):
            raise LayoutError(f"Canonical position {list(position)} is not finite")
        return cls(position=position, rotation=quat)


class PoseNode:
    """A named transform in the avatar rig"""

    def __init__(self, name: str, canonical: CanonicalPose, tolerance_radius: float = 0.01):
        self.name = name
        self.parent: Optional['PoseNode'] = None
        self.children: List['PoseNode'] = []
        self._canonical = canonical
        self.tolerance_radius = float(tolerance_radius)

        self.local_position = np.array(canonical.position, dtype=float)
        self.local_rotation = canonical.rotation_obj

        self.active = True
        self.destroyed = False

    @property
    def canonical_local_pose(self) -> CanonicalPose:
        return self._canonical

    @property
    def is_alive(self) -> bool:
        return not self.destroyed and self.active

    def set_parent(self, parent: Optional['PoseNode'], world_position_stays: bool = True):
        """Raw scene-graph attach. Does not change the tree's declared parent."""
        if parent is self.parent:
            return
        ancestor = parent
        while ancestor is not None:
            if ancestor is self:
                raise LayoutError(f"Attaching '{self.name}' under '{parent.name}' would create a cycle")
            ancestor = ancestor.parent

        if world_position_stays:
            world_position = self.world_position
            world_rotation = self.world_rotation

        if self.parent is not None and self in self.parent.children:
            self.parent.children.remove(self)
        self.parent = parent
        if parent is not None:
            parent.children.append(self)

        if world_position_stays:
            self.set_world_pose(world_position, world_rotation)

    @property
    def world_rotation(self) -> R:
        if self.parent is None:
            return self.local_rotation
        return self.parent.world_rotation * self.local_rotation

    @property
    def world_position(self) -> np.ndarray:
        if self.parent is None:
            return np.array(self.local_position, dtype=float)
        return self.parent.world_position + self.parent.world_rotation.apply(self.local_position)

    def set_world_pose(self, position, rotation: Optional[R] = None):
        """Place the node in world space by rewriting its local pose"""
        position = np.asarray(position, dtype=float)
        if self.parent is None:
            self.local_position = np.array(position, dtype=float)
            if rotation is not None:
                self.local_rotation = rotation
            return
        parent_rotation = self.parent.world_rotation
        self.local_position = parent_rotation.inv().apply(position - self.parent.world_position)
        if rotation is not None:
            self.local_rotation = parent_rotation.inv() * rotation

    def local_displacement(self) -> float:
        """Distance between the current and canonical local position"""
        return float(np.linalg.norm(self.local_position - self._canonical.position))

    def __repr__(self) -> str:
        parent = self.parent.name if self.parent is not None else None
        return f"PoseNode(name={self.name!r}, parent={parent!r})"


class PoseTree:
    """Owns the pose nodes of one avatar and remembers their declared parents"""

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self.root: Optional[PoseNode] = None
        self._nodes: Dict[str, PoseNode] = {}
        self._declared_parents: Dict[str, Optional[str]] = {}

    @classmethod
    def from_layout(cls, layout: List[Dict]) -> 'PoseTree':
        """Build the tree from avatar layout entries (parents listed before children)"""
        tree = cls()
        for entry in layout:
            canonical = CanonicalPose.create(
                entry.get('canonical_position', (0.0, 0.0, 0.0)),
                entry.get('canonical_rotation', (1.0, 0.0, 0.0, 0.0)),
            )
            tree.add_node(
                entry['name'],
                entry.get('parent'),
                canonical,
                tolerance_radius=entry.get('tolerance_radius', 0.01),
            )
        tree.logger.debug(f"Pose tree built with {len(tree)} nodes")
        return tree

    def add_node(self, name: str, parent_name: Optional[str], canonical: CanonicalPose,
                 tolerance_radius: float = 0.01) -> PoseNode:
        if name in self._nodes:
            raise LayoutError(f"Duplicate node name: {name}")
        if tolerance_radius < 0:
            raise LayoutError(f"Negative tolerance radius for {name}: {tolerance_radius}")

        node = PoseNode(name, canonical, tolerance_radius)
        if parent_name is None:
            if self.root is not None and not self.root.destroyed:
                raise LayoutError(f"Tree already has root '{self.root.name}', cannot add second root '{name}'")
            self.root = node
        else:
            parent = self._nodes.get(parent_name)
            if parent is None:
                raise LayoutError(f"Unknown parent '{parent_name}' for node '{name}'")
            node.set_parent(parent, world_position_stays=False)

        self._nodes[name] = node
        self._declared_parents[name] = parent_name
        return node

    def find(self, name: str) -> Optional[PoseNode]:
        return self._nodes.get(name)

    def declared_parent(self, node: PoseNode) -> Optional[PoseNode]:
        parent_name = self._declared_parents.get(node.name)
        if parent_name is None:
            return None
        return self._nodes.get(parent_name)

    def declared_parent_name(self, name: str) -> Optional[str]:
        return self._declared_parents.get(name)

    def declared_depth(self, name: str) -> int:
        """Number of declared ancestors above ``name``"""
        depth = 0
        parent_name = self._declared_parents.get(name)
        while parent_name is not None and depth <= len(self._nodes):
            depth += 1
            parent_name = self._declared_parents.get(parent_name)
        return depth

    def reparent(self, name: str, new_parent_name: str, world_position_stays: bool = False):
        """Explicit re-parent: moves the node and updates its declared parent"""
        node = self._nodes.get(name)
        new_parent = self._nodes.get(new_parent_name)
        if node is None or new_parent is None:
            raise LayoutError(f"Cannot reparent '{name}' under '{new_parent_name}': node not found")
        node.set_parent(new_parent, world_position_stays=world_position_stays)
        self._declared_parents[name] = new_parent_name
        self.logger.info(f"✓ Reparented {name} under {new_parent_name}")

    def destroy(self, name: str):
        """Tear down a node and its subtree"""
        node = self._nodes.get(name)
        if node is None:
            return
        for child in list(node.children):
            self.destroy(child.name)
        if node.parent is not None and node in node.parent.children:
            node.parent.children.remove(node)
        node.parent = None
        node.destroyed = True
        del self._nodes[name]
        del self._declared_parents[name]
        if node is self.root:
            self.root = None
        self.logger.debug(f"Destroyed node {name}")

    def walk(self) -> Iterator[PoseNode]:
        """All registered nodes, attached or not"""
        return iter(list(self._nodes.values()))

    def names(self) -> List[str]:
        return list(self._nodes.keys())

    def __contains__(self, name: str) -> bool:
        return name in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)
