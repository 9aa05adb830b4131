from socialnet.auth import get_password_hash
from socialnet.database import SessionLocal, engine, Base
from socialnet.models import Comment, Follow, Post, User

# Create tables
Base.metadata.create_all(bind=engine)

db = SessionLocal()

# Clear existing data
db.query(Comment).delete()
db.query(Post).delete()
db.query(Follow).delete()
db.query(User).delete()

password = get_password_hash("password123")

# Sample users
users = [
    User(name="Admin", user_name="admin", email="admin@example.com", phone="+15550001000",
         hashed_password=password, role="ADMIN"),
    User(name="Alice Moreau", user_name="alice", email="alice@example.com", phone="+15550001001",
         hashed_password=password),
    User(name="Bilal Khan", user_name="bilal", email="bilal@example.com", phone="+15550001002",
         hashed_password=password),
    User(name="Chen Wei", user_name="chen", email="chen@example.com", phone="+15550001003",
         hashed_password=password),
]
db.add_all(users)
db.flush()
admin, alice, bilal, chen = users

# Follow graph
follows = [
    Follow(follower_id=alice.id, following_id=bilal.id),
    Follow(follower_id=bilal.id, following_id=alice.id),
    Follow(follower_id=chen.id, following_id=alice.id),
]
db.add_all(follows)

# Sample posts
posts = [
    Post(author_id=alice.id, text="First day on the network!", status="live",
         reviewed_by_id=admin.id),
    Post(author_id=bilal.id, text="Sunset from the rooftop tonight", status="live",
         reviewed_by_id=admin.id),
    Post(author_id=bilal.id, text="Only for the people who follow me", visibility="followers",
         status="live", reviewed_by_id=admin.id),
    Post(author_id=chen.id, text="Waiting for review", status="inReview"),
]
db.add_all(posts)
db.flush()

comments = [
    Comment(post_id=posts[0].id, user_id=bilal.id, text="Welcome!"),
    Comment(post_id=posts[1].id, user_id=alice.id, text="Beautiful colors"),
]
db.add_all(comments)
db.commit()

print("Database seeded successfully!")
print(f"  - {len(users)} users (password: password123)")
print(f"  - {len(follows)} follows")
print(f"  - {len(posts)} posts")
print(f"  - {len(comments)} comments")

db.close()
