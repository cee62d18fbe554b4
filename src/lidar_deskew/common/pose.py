from typing import Sequence, Union

import numpy as np
import torch
from scipy.spatial.transform import Rotation


class Pose:
    """ Class to define a rigid transformation.

    Poses are stored as a 4x4 homogenous transformation matrix in double precision.
    Quaternions crossing this interface are ordered [w,x,y,z].
    """

    ## Constructor
    # @param transformation_matrix: 4D Homogenous transformation matrix to turn into a pose
    def __init__(self, transformation_matrix: torch.Tensor = None):
        if transformation_matrix is None:
            transformation_matrix = torch.eye(4, dtype=torch.float64)
        elif isinstance(transformation_matrix, np.ndarray):
            transformation_matrix = torch.from_numpy(transformation_matrix)

        assert transformation_matrix.shape == (4, 4), \
            f"Expected a 4x4 transformation matrix, got {tuple(transformation_matrix.shape)}"

        self._transformation_matrix = transformation_matrix.to(torch.float64)

    def __repr__(self) -> str:
        return str(self)

    def __str__(self) -> str:
        return str(self.get_transformation_matrix())

    ## Builds a pose from a rotation and a translation
    # @param rotation: A scipy Rotation, or a 3x3 rotation matrix
    # @param translation: 3-vector
    def from_rotation_translation(rotation: Union[Rotation, torch.Tensor],
                                  translation: Union[Sequence[float], torch.Tensor]) -> "Pose":
        if isinstance(rotation, Rotation):
            rotation = torch.from_numpy(rotation.as_matrix())

        mat = torch.eye(4, dtype=torch.float64)
        mat[:3, :3] = torch.as_tensor(rotation, dtype=torch.float64)
        mat[:3, 3] = torch.as_tensor(translation, dtype=torch.float64)
        return Pose(mat)

    ## Builds a pose from a quaternion ordered [w,x,y,z] and a translation
    def from_quaternion(quaternion_wxyz: Union[Sequence[float], torch.Tensor],
                        translation: Union[Sequence[float], torch.Tensor]) -> "Pose":
        return Pose.from_rotation_translation(quaternion_to_rotation(quaternion_wxyz), translation)

    ## Load in a setting dict of form {xyz: [x,y,z], "orientation": [w,x,y,z]} to a Pose
    # @returns a Pose representing the transform in the settings
    def from_settings(pose_dict: dict) -> "Pose":
        return Pose.from_quaternion(pose_dict['orientation'], pose_dict['xyz'])

    ## Converts the current Pose to a dict and @returns the pose as a dict.
    def to_settings(self) -> dict:
        xyz = [t.item() for t in self.get_translation()]
        return {
            "xyz": xyz,
            "orientation": rotation_to_quaternion(self.get_rotation()).tolist()
        }

    ## @returns a copy of the current pose.
    def clone(self) -> "Pose":
        return Pose(self.get_transformation_matrix().clone())

    # Composes the transformations, and returns the result
    def __mul__(self, other: "Pose") -> "Pose":
        return Pose(self.get_transformation_matrix() @ other.get_transformation_matrix())

    # Inverts the transformation represented by the pose
    def inv(self) -> "Pose":
        rot_inv = self.get_rotation_matrix().T
        mat = torch.eye(4, dtype=torch.float64, device=self._transformation_matrix.device)
        mat[:3, :3] = rot_inv
        mat[:3, 3] = -rot_inv @ self.get_translation()
        return Pose(mat)

    ## @returns a 4x4 homogenous transformation matrix
    def get_transformation_matrix(self) -> torch.Tensor:
        return self._transformation_matrix

    ## Gets the translation component of the pose
    def get_translation(self) -> torch.Tensor:
        return self._transformation_matrix[:3, 3]

    ## Returns the rotation as a rotation matrix
    def get_rotation_matrix(self) -> torch.Tensor:
        return self._transformation_matrix[:3, :3]

    ## Returns the rotation as a scipy Rotation
    def get_rotation(self) -> Rotation:
        return Rotation.from_matrix(self.get_rotation_matrix().detach().cpu().numpy())

    ## @returns [yaw, pitch, roll] in degrees
    def get_ypr(self) -> np.ndarray:
        return self.get_rotation().as_euler('ZYX', degrees=True)

    ## Applies the transformation to @p points, a Nx3 tensor. @returns the transformed Nx3 tensor
    # in the dtype of @p points.
    def transform_points(self, points: torch.Tensor) -> torch.Tensor:
        mat = self._transformation_matrix.to(points.device)
        transformed = points.to(torch.float64) @ mat[:3, :3].T + mat[:3, 3]
        return transformed.to(points.dtype)


## Converts a quaternion ordered [w,x,y,z] to a scipy Rotation. Also accepts Nx4 batches.
def quaternion_to_rotation(quaternion_wxyz: Union[Sequence[float], torch.Tensor, np.ndarray]) -> Rotation:
    if isinstance(quaternion_wxyz, torch.Tensor):
        quaternion_wxyz = quaternion_wxyz.detach().cpu().numpy()
    quat = np.asarray(quaternion_wxyz, dtype=np.float64)
    # scipy wants x,y,z,w
    return Rotation.from_quat(np.roll(quat, -1, axis=-1))


## Converts a scipy Rotation to quaternion(s) ordered [w,x,y,z]
def rotation_to_quaternion(rotation: Rotation) -> np.ndarray:
    return np.roll(rotation.as_quat(), 1, axis=-1)
