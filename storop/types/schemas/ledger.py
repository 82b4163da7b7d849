from marshmallow import fields
from storop.types.base import BaseSchema
from storop.types.models import ChildResourceRecord


class ChildResourceRecordSchema(BaseSchema):
    __model__ = ChildResourceRecord

    kind = fields.Str(data_key="kind", required=True)
    namespace = fields.Str(data_key="namespace", allow_none=True, load_default=None)
    name = fields.Str(data_key="name", required=True)
    applied_generation = fields.Int(data_key="appliedGeneration", required=True)
    observed_generation = fields.Int(
        data_key="observedGeneration", allow_none=True, load_default=None
    )
    parent_kind = fields.Str(data_key="parentKind", required=True)
    parent_namespace = fields.Str(
        data_key="parentNamespace", allow_none=True, load_default=None
    )
    parent_name = fields.Str(data_key="parentName", required=True)
