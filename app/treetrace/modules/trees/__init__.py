"""
Tree catalog: browse, search and paginate trees; admins create, edit and
delete records and their photos.
"""
