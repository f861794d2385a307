import copy
import unittest

import numpy as np
from scipy.spatial.transform import Rotation as R

from rdwguard.bin.core.errors import LayoutError
from rdwguard.bin.core.invariants import DEFAULT_AVATAR_LAYOUT
from rdwguard.bin.core.pose_tree import (CanonicalPose, PoseTree, quat_wxyz_to_rotation,
                                         rotation_to_wxyz)


class CanonicalPoseTests(unittest.TestCase):
    def test_create_normalizes_and_freezes(self) -> None:
        canonical = CanonicalPose.create([0.0, 1.6, 0.0], [2.0, 0.0, 0.0, 0.0])
        np.testing.assert_allclose(canonical.rotation, [1.0, 0.0, 0.0, 0.0])
        with self.assertRaises(ValueError):
            canonical.position[1] = 5.0
        with self.assertRaises(ValueError):
            canonical.rotation[0] = 0.5

    def test_create_rejects_degenerate_values(self) -> None:
        with self.assertRaises(LayoutError):
            CanonicalPose.create([0.0, 0.0, 0.0], [0.0, 0.0, 0.0, 0.0])
        with self.assertRaises(LayoutError):
            CanonicalPose.create([float("nan"), 0.0, 0.0])

    def test_quaternion_helpers_use_wxyz_order(self) -> None:
        rotation = R.from_euler("y", 90, degrees=True)
        wxyz = rotation_to_wxyz(rotation)
        self.assertAlmostEqual(wxyz[0], np.cos(np.pi / 4))
        self.assertAlmostEqual(wxyz[2], np.sin(np.pi / 4))
        back = quat_wxyz_to_rotation(wxyz)
        self.assertAlmostEqual((back.inv() * rotation).magnitude(), 0.0)


class PoseTreeTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tree = PoseTree.from_layout(copy.deepcopy(DEFAULT_AVATAR_LAYOUT))

    def test_from_layout_builds_declared_hierarchy(self) -> None:
        self.assertEqual(self.tree.root.name, "RDW")
        self.assertEqual(len(self.tree), 6)
        head = self.tree.find("Head")
        self.assertIs(head.parent, self.tree.find("Simulated User"))
        self.assertEqual(self.tree.declared_parent_name("avatarRoot"), "Body")
        np.testing.assert_allclose(head.world_position, [0.0, 1.6, 0.0])

    def test_world_pose_composes_parent_transforms(self) -> None:
        root = self.tree.root
        root.local_position = np.array([1.0, 0.0, 2.0])
        root.local_rotation = R.from_euler("y", 90, degrees=True)
        head = self.tree.find("Head")
        head.local_position = np.array([0.0, 1.6, 0.5])
        # +Z rotated 90 degrees about Y lands on +X
        np.testing.assert_allclose(head.world_position, [1.5, 1.6, 2.0], atol=1e-9)

    def test_set_world_pose_rewrites_local_pose(self) -> None:
        self.tree.root.local_position = np.array([2.0, 0.0, 0.0])
        visual_root = self.tree.find("avatarRoot")
        visual_root.set_world_pose([3.0, 0.0, 1.0], R.from_euler("y", 30, degrees=True))
        np.testing.assert_allclose(visual_root.local_position, [1.0, 0.0, 1.0], atol=1e-9)
        np.testing.assert_allclose(visual_root.world_position, [3.0, 0.0, 1.0], atol=1e-9)
        self.assertAlmostEqual(visual_root.world_rotation.as_euler("yxz", degrees=True)[0], 30.0)

    def test_raw_set_parent_keeps_declared_parent(self) -> None:
        head = self.tree.find("Head")
        body = self.tree.find("Body")
        body.local_position = np.array([0.0, 0.0, 1.0])
        head.set_parent(body, world_position_stays=True)
        self.assertIs(head.parent, body)
        self.assertIn(head, body.children)
        self.assertEqual(self.tree.declared_parent_name("Head"), "Simulated User")
        np.testing.assert_allclose(head.world_position, [0.0, 1.6, 0.0], atol=1e-9)
        np.testing.assert_allclose(head.local_position, [0.0, 1.6, -1.0], atol=1e-9)

    def test_set_parent_rejects_cycles(self) -> None:
        with self.assertRaises(LayoutError):
            self.tree.find("Redirected Avatar").set_parent(self.tree.find("Head"))

    def test_reparent_updates_declaration(self) -> None:
        self.tree.reparent("avatarRoot", "Simulated User")
        self.assertEqual(self.tree.declared_parent_name("avatarRoot"), "Simulated User")
        self.assertIs(self.tree.find("avatarRoot").parent, self.tree.find("Simulated User"))
        with self.assertRaises(LayoutError):
            self.tree.reparent("avatarRoot", "Nowhere")

    def test_declared_depth_follows_declarations(self) -> None:
        self.assertEqual(self.tree.declared_depth("RDW"), 0)
        self.assertEqual(self.tree.declared_depth("Head"), 3)
        self.tree.reparent("Simulated User", "Body")
        self.assertEqual(self.tree.declared_depth("Head"), 4)
        # Raw set_parent leaves the declared depth alone
        self.tree.find("Body").set_parent(self.tree.find("RDW"))
        self.assertEqual(self.tree.declared_depth("Body"), 2)

    def test_add_node_validates_structure(self) -> None:
        canonical = CanonicalPose.create()
        with self.assertRaises(LayoutError):
            self.tree.add_node("Head", "Body", canonical)
        with self.assertRaises(LayoutError):
            self.tree.add_node("Second Root", None, canonical)
        with self.assertRaises(LayoutError):
            self.tree.add_node("Hand", "Arm", canonical)
        with self.assertRaises(LayoutError):
            self.tree.add_node("Hand", "Body", canonical, tolerance_radius=-0.1)

    def test_destroy_removes_subtree(self) -> None:
        body = self.tree.find("Body")
        visual_root = self.tree.find("avatarRoot")
        self.tree.destroy("Body")
        self.assertNotIn("Body", self.tree)
        self.assertNotIn("avatarRoot", self.tree)
        self.assertTrue(body.destroyed)
        self.assertTrue(visual_root.destroyed)
        self.assertNotIn(body, self.tree.find("Redirected Avatar").children)
        # Unknown names are ignored
        self.tree.destroy("Body")

    def test_inactive_node_is_not_alive(self) -> None:
        head = self.tree.find("Head")
        head.active = False
        self.assertFalse(head.is_alive)
        self.assertIn("Head", self.tree)

    def test_local_displacement_measures_from_canonical(self) -> None:
        head = self.tree.find("Head")
        head.local_position = np.array([0.3, 1.6, 0.4])
        self.assertAlmostEqual(head.local_displacement(), 0.5)


if __name__ == "__main__":
    unittest.main()
