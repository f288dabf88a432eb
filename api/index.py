from mangum import Mangum

from jewels.api import app

handler = Mangum(app)
