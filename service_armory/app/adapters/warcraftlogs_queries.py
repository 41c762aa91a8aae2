"""
GraphQL documents sent to the Warcraft Logs v2 client API.

Every document selects ``rateLimitData`` so the points budget can be updated
from the response that paid for it.
"""

RATE_LIMIT_FIELDS = """
  rateLimitData {
    limitPerHour
    pointsSpentThisHour
    pointsResetIn
  }
"""

RATE_LIMIT_QUERY = "query RateLimit {" + RATE_LIMIT_FIELDS + "}"

EXPANSION_ENCOUNTERS_QUERY = """
query ExpansionEncounters {
  worldData {
    expansions {
      id
      name
      zones {
        id
        name
        partitions {
          id
          name
          compactName
          default
        }
        encounters {
          id
          name
        }
      }
    }
  }
""" + RATE_LIMIT_FIELDS + "}"

CHARACTER_PARSES_QUERY = """
query CharacterParses(
  $name: String!
  $server_slug: String!
  $server_region: String!
  $zone_id: Int!
  $partition: Int
) {
  characterData {
    character(name: $name, serverSlug: $server_slug, serverRegion: $server_region) {
      hidden
      zoneRankings(zoneID: $zone_id, partition: $partition)
    }
  }
""" + RATE_LIMIT_FIELDS + "}"
