"""
Example: print every insert written to a replica set.

Usage:
    MONGO_URI="mongodb://localhost:27017/?replicaSet=rs0" python examples/tail_oplog.py
"""

import json
import logging

from mongo_oplog import Oplog, OperationType
from mongo_oplog.mongodb import get_client
from mongo_oplog.settings import get_settings
from mongo_oplog.utils import get_logger

logger = get_logger("tail_oplog", level=logging.INFO)


def main():
    settings = get_settings()
    client = get_client(settings.mongo)

    try:
        with Oplog.open(client, settings.oplog) as oplog:
            logger.info("Tailing oplog", extra={"collection": oplog.namespace})
            for operation in oplog.operations(ignore_errors=True):
                if operation.kind.type is OperationType.INSERT:
                    print(json.dumps(operation.to_dict()))
    except KeyboardInterrupt:
        logger.info("Interrupted, stopping")
    finally:
        client.close()


if __name__ == "__main__":
    main()
