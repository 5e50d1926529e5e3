from .local_fs import LocalFSFileAdapter
from .s3 import S3FileAdapter
from .vercel_blob import VercelBlobFileAdapter

__all__ = ["LocalFSFileAdapter", "S3FileAdapter", "VercelBlobFileAdapter"]
