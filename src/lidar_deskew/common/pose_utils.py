import numpy as np
import pandas as pd
import torch
from scipy.spatial.transform import Rotation

from lidar_deskew.common.sensors import PoseSample


## Given a set of transformation matrices and timestamps, dumps the trajectory to TUM format.
# @param transformation_matrices: Nx4x4 homogenous transforms representing the poses
# @param timestamps: N timestamps, one per pose
# @param output_file: path to dump result to.
def dump_trajectory_to_tum(transformation_matrices: torch.Tensor,
                           timestamps: torch.Tensor,
                           output_file: str) -> None:

    transformation_matrices = transformation_matrices.detach().cpu().to(torch.float64).numpy()
    timestamps = timestamps.detach().cpu().to(torch.float64).numpy()

    if transformation_matrices.shape[0] == 0:
        open(output_file, 'w').close()
        return

    translations = transformation_matrices[:, :3, 3].reshape(-1, 3)
    # scipy already gives x,y,z,w, which is what TUM wants
    rotations = Rotation.from_matrix(transformation_matrices[:, :3, :3]).as_quat().reshape(-1, 4)
    data = np.hstack([timestamps.reshape(-1, 1), translations, rotations])
    np.savetxt(output_file, data, delimiter=" ", fmt="%.10f")


## Builds pose samples from a dataframe with columns
# timestamp, x, y, z, qw, qx, qy, qz, vx, vy, vz (velocity in the body frame)
def build_pose_samples_from_df(df: pd.DataFrame) -> list:
    data = df[["timestamp", "x", "y", "z", "qw", "qx", "qy", "qz", "vx", "vy", "vz"]].to_numpy(dtype=np.float64)

    return [PoseSample(row[0], row[4:8], row[1:4], row[8:11]) for row in data]
