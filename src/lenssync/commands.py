"""Pass-through command turning protocol locations into a references view."""

from __future__ import annotations

from lsprotocol import types
from lsprotocol.converters import get_converter
from pydantic import ValidationError

from lenssync.exceptions import CommandPayloadError
from lenssync.host import ProcessController
from lenssync.schema import ShowReferencesArgument

SHOW_REFERENCES_COMMAND = "lenssync.action.showReferences"
EDITOR_SHOW_REFERENCES_COMMAND = "editor.action.showReferences"

_converter = get_converter()


def parse_argument(
    argument: object,
) -> tuple[str, types.Position, list[types.Location]]:
    try:
        payload = ShowReferencesArgument.model_validate(argument)
    except ValidationError as exc:
        raise CommandPayloadError(f"invalid {SHOW_REFERENCES_COMMAND} payload: {exc}") from exc
    data = payload.protocol_payload()
    position = _converter.structure(data["position"], types.Position)
    locations = [
        _converter.structure(location, types.Location) for location in data["locations"]
    ]
    return payload.uri, position, locations


async def show_references(controller: ProcessController, argument: object) -> object:
    uri, position, locations = parse_argument(argument)
    if not controller.is_active():
        await controller.activate()
    return await controller.execute_command(
        EDITOR_SHOW_REFERENCES_COMMAND,
        uri,
        position,
        locations,
    )
