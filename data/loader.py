import logging

from data.config import config

logging.basicConfig(level=config["logs"]["level"], format="%(asctime)s [%(levelname)-5.5s]  %(message)s",
                    handlers=[
                        # logging.FileHandler("xhs.log"),
                        logging.StreamHandler()
                    ])
logging.getLogger('aiohttp').setLevel(logging.WARNING)
logging.getLogger('asyncio').setLevel(logging.WARNING)
logging.getLogger('curl_cffi').setLevel(logging.WARNING)
