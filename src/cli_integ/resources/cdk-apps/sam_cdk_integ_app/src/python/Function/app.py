import json

import geonamescache

gc = geonamescache.GeonamesCache()


def lambda_handler(event, context):
    return {
        "statusCode": 200,
        "body": json.dumps({"message": "Hello World", "continents": len(gc.get_continents())}),
    }
