from marshmallow import fields, post_dump
from storop.types.base import BaseSchema
from storop.types.models import (
    GenerationHistory,
    NodeRolloutState,
    NodeRollout,
    StorageStatus,
)


class StatusSchema(BaseSchema):
    """Status schemas drop empty values so that merge patches stay minimal."""

    @post_dump
    def remove_none(self, data, **kwargs):
        return {k: v for k, v in data.items() if v is not None}


class GenerationHistorySchema(StatusSchema):
    __model__ = GenerationHistory

    group = fields.Str(data_key="group", allow_none=False, load_default="")
    kind = fields.Str(data_key="kind", required=True)
    namespace = fields.Str(data_key="namespace", allow_none=True, load_default=None)
    name = fields.Str(data_key="name", required=True)
    last_generation = fields.Int(data_key="lastGeneration", required=True)


class NodeRolloutStateSchema(StatusSchema):
    __model__ = NodeRolloutState

    node_name = fields.Str(data_key="nodeName", required=True)
    phase = fields.Str(data_key="phase", required=True)
    last_transition_time = fields.Str(
        data_key="lastTransitionTime", allow_none=True, load_default=None
    )
    message = fields.Str(data_key="message", allow_none=True, load_default=None)


class NodeRolloutSchema(StatusSchema):
    __model__ = NodeRollout

    generation = fields.Int(data_key="generation", required=True)
    strategy = fields.Str(data_key="strategy", allow_none=True, load_default=None)
    nodes = fields.List(
        fields.Nested(NodeRolloutStateSchema()), data_key="nodes", load_default=list
    )


class StorageStatusSchema(StatusSchema):
    __model__ = StorageStatus

    observed_generation = fields.Int(
        data_key="observedGeneration", allow_none=True, load_default=None
    )
    children_generations = fields.List(
        fields.Nested(GenerationHistorySchema()),
        data_key="childrenGenerations",
        load_default=list,
    )
    conditions = fields.List(
        fields.Dict(), data_key="conditions", allow_none=True, load_default=list
    )
    node_rollout = fields.Nested(
        NodeRolloutSchema(), data_key="nodeRollout", allow_none=True, load_default=None
    )
