"""
Two independent MongoDB datasources.

Users live in the primary database, products (and archived task snapshots)
in the secondary one. Each URI carries its own database name in the path.
"""
import re

from bson import ObjectId
from pymongo import MongoClient

from workflow_api import config

_clients = {}


def _client(name: str, uri: str) -> MongoClient:
    if name not in _clients:
        _clients[name] = MongoClient(uri)
    return _clients[name]


def primary_client() -> MongoClient:
    return _client("primary", config.PRIMARY_MONGO_URI)


def secondary_client() -> MongoClient:
    return _client("secondary", config.SECONDARY_MONGO_URI)


def primary_database():
    return primary_client().get_default_database("primarydb")


def secondary_database():
    return secondary_client().get_default_database("secondarydb")


def close_clients():
    for client in _clients.values():
        client.close()
    _clients.clear()


def _out(doc: dict) -> dict:
    doc = dict(doc)
    if isinstance(doc.get("_id"), ObjectId):
        doc["_id"] = str(doc["_id"])
    if "_id" in doc:
        doc["id"] = doc.pop("_id")
    return doc


class _Repository:
    collection_name = None

    def __init__(self, database):
        self.collection = database[self.collection_name]

    def save(self, doc: dict) -> dict:
        doc = {k: v for k, v in doc.items() if v is not None}
        doc_id = doc.pop("id", None)
        if doc_id:
            # ids go out as hex strings, stored ones are ObjectIds
            if isinstance(doc_id, str) and ObjectId.is_valid(doc_id):
                doc_id = ObjectId(doc_id)
            self.collection.replace_one({"_id": doc_id}, doc, upsert=True)
        else:
            doc_id = self.collection.insert_one(doc).inserted_id
        return _out({**doc, "_id": doc_id})

    def find(self, query: dict) -> list:
        return [_out(d) for d in self.collection.find(query)]


class UserRepository(_Repository):
    collection_name = "users"

    def __init__(self, database=None):
        super().__init__(database if database is not None else primary_database())

    def find_by_name(self, name: str) -> list:
        return self.find({"name": name})


class ProductRepository(_Repository):
    collection_name = "products"

    def __init__(self, database=None):
        super().__init__(database if database is not None else secondary_database())

    def find_by_price_greater_than(self, price: float) -> list:
        return self.find({"price": {"$gt": price}})


class DataService:
    def __init__(self, users: UserRepository = None, products: ProductRepository = None):
        self.users = users or UserRepository()
        self.products = products or ProductRepository()

    def save_user(self, user: dict) -> dict:
        return self.users.save(user)

    def save_product(self, product: dict) -> dict:
        return self.products.save(product)

    def find_users_by_email_domain(self, domain: str = "@gmail.com") -> list:
        return self.users.find({"email": {"$regex": re.escape(domain)}})

    def find_expensive_products(self, min_price: float = 100) -> list:
        return self.products.find_by_price_greater_than(min_price)
