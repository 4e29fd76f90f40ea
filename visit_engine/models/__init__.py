from visit_engine.models.dataset import DatasetAck, DatasetUpload

__all__ = ["DatasetAck", "DatasetUpload"]
