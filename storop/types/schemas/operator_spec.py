from marshmallow import fields, validate
from storop.types.base import BaseSchema
from storop.types.models import OperatorSpec, SecretReference


class SecretReferenceSchema(BaseSchema):
    __model__ = SecretReference

    name = fields.Str(data_key="name", required=True, allow_none=False)
    namespace = fields.Str(data_key="namespace", allow_none=True, load_default=None)


class OperatorSpecSchema(BaseSchema):
    """Fields shared by resources embedding the generic operator spec."""

    __model__ = OperatorSpec

    MANAGED = "Managed"
    UNMANAGED = "Unmanaged"
    REMOVED = "Removed"

    management_state = fields.Str(
        data_key="managementState",
        allow_none=False,
        load_default=MANAGED,
        validate=validate.OneOf([MANAGED, UNMANAGED, REMOVED]),
    )
    image_pull_spec = fields.Str(
        data_key="imagePullSpec", allow_none=True, load_default=None
    )
    image_pull_policy = fields.Str(
        data_key="imagePullPolicy",
        allow_none=True,
        load_default=None,
        validate=validate.OneOf(["Always", "IfNotPresent", "Never"]),
    )
    version = fields.Str(data_key="version", allow_none=True, load_default=None)
