"""
Route parameter normalization.

Used as FastAPI dependencies so a bad region, realm or character is rejected
with a 400 before any cache lookup or upstream call happens.
"""

from typing import Optional

from fastapi import Depends, Header, Path, Query

from shared.errors import AuthenticationError, ValidationError

from .models import CharacterOptions, CharacterParsesOptions, UserToken

SUPPORTED_REGIONS = ("us", "eu", "kr", "tw")
CHARACTER_NAME_MIN = 2
CHARACTER_NAME_MAX = 12


def region_param(region: str = Path(...)) -> str:
    region = region.lower()
    if region not in SUPPORTED_REGIONS:
        raise ValidationError(f"region '{region}' is not a supported region", details={"region": region})
    return region


def realm_param(realm: str = Path(...)) -> str:
    realm = realm.lower()
    if not realm:
        raise ValidationError("realm not provided in route parameter")
    return realm


def character_param(character: str = Path(...)) -> str:
    character = character.lower()
    if not CHARACTER_NAME_MIN <= len(character) <= CHARACTER_NAME_MAX:
        raise ValidationError(
            f"character name must be between {CHARACTER_NAME_MIN}-{CHARACTER_NAME_MAX} characters",
            details={"character": character},
        )
    return character


def character_options(
    region: str = Depends(region_param),
    realm: str = Depends(realm_param),
    character: str = Depends(character_param),
) -> CharacterOptions:
    return CharacterOptions(region=region, realm=realm, character=character)


def parse_int(value: Optional[str], name: str, *, required: bool) -> Optional[int]:
    """Parse an integer route or query value, raising a 400 on bad input."""
    if value is None or value == "":
        if required:
            raise ValidationError(f"missing required query param '{name}'")
        return None
    try:
        return int(value)
    except ValueError:
        raise ValidationError(f"param '{name}' must be an integer", details={name: value})


def season_param(season_id: str = Path(...)) -> int:
    return parse_int(season_id, "season_id", required=True)


def parses_options(
    options: CharacterOptions = Depends(character_options),
    zone_id: Optional[str] = Query(None),
    partition: Optional[str] = Query(None),
) -> CharacterParsesOptions:
    return CharacterParsesOptions(
        character=options,
        zone_id=parse_int(zone_id, "zone_id", required=True),
        partition=parse_int(partition, "partition", required=False),
    )


def bearer_token(authorization: Optional[str] = Header(None)) -> UserToken:
    """User token from an ``Authorization: Bearer`` header."""
    if not authorization:
        raise AuthenticationError("missing Authorization header")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() != "bearer" or not credentials.strip():
        raise AuthenticationError("the provided token is invalid")
    return UserToken(access_token=credentials.strip())
